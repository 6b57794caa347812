from __future__ import annotations
import os
from rlsledger import create_app

def main() -> None:
    flask_app = create_app()

    # show which report endpoints are mounted
    print("\n=== URL MAP ===")
    for r in sorted(flask_app.url_map.iter_rules(), key=lambda x: x.rule):
        print(r)
    print("===============\n")

    settings = flask_app.config["RLS_SETTINGS"]
    print(f"Serving RLS artifacts from {settings.coverage_dir.resolve()}")
    if not settings.database_url:
        print("No DATABASE_URL or SUPABASE_DB_URL set; /db-health will report unavailable")

    debug_enabled = os.environ.get("FLASK_DEBUG", "0") in {"1", "true", "True"}
    flask_app.run(host="0.0.0.0", port=int(os.environ.get("PORT", 5000)), debug=debug_enabled)

if __name__ == "__main__":
    main()
