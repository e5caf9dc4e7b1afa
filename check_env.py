#!/usr/bin/env python3
"""Helper script to check and create the .env file for the dispatch service."""

from pathlib import Path
import os

TEMPLATE = """# Storage backend: memory (default) or supabase
BR_STORE_BACKEND=memory

# Supabase Configuration (required when BR_STORE_BACKEND=supabase)
# Get these from: https://supabase.com/dashboard -> Your Project -> Settings -> API
BR_SUPABASE_URL=https://your-project-id.supabase.co
BR_SUPABASE_KEY=your-service-role-key-here

# Batching
BR_BATCH_CAPACITY_KG=5000
BR_READY_THRESHOLD_KG=3500

# Depot used as the default route origin
BR_DEPOT_LATITUDE=8.4542
BR_DEPOT_LONGITUDE=124.6319

# Optional zone table replacing the built-in gazetteer (.json or .xlsx)
# BR_GAZETTEER_FILE=./data/zones.xlsx
"""


def _mask(value: str) -> str:
    return value[:20] + "..." + value[-10:] if len(value) > 30 else value


def main():
    project_root = Path(__file__).parent
    env_file = project_root / ".env"

    print("=" * 60)
    print("Batch dispatch environment checker")
    print("=" * 60)

    if not env_file.exists():
        env_file.write_text(TEMPLATE, encoding="utf-8")
        print(f"Created template .env file at: {env_file}")
        print("Edit it and set BR_SUPABASE_URL / BR_SUPABASE_KEY if you use the supabase backend.")
        return

    print(f"Found .env file at: {env_file}")
    for line in env_file.read_text(encoding="utf-8").splitlines():
        if line.startswith("BR_SUPABASE_KEY=") and "=" in line:
            name, value = line.split("=", 1)
            print(f"  {name}={_mask(value.strip())}")
        elif line.strip() and not line.startswith("#"):
            print(f"  {line}")
    print()

    try:
        from batchroute.config import settings
    except Exception as e:
        print(f"Error loading config: {e}")
        return

    print(f"Store backend: {settings.store_backend}")
    print(f"Batch capacity: {settings.batch_capacity_kg}kg, ready at {settings.ready_threshold_kg}kg")
    if settings.store_backend == "supabase":
        if settings.supabase_url and settings.supabase_key:
            print("Supabase is configured.")
        else:
            print("Supabase backend selected but BR_SUPABASE_URL or BR_SUPABASE_KEY is missing.")
    if os.getenv("BR_GAZETTEER_FILE") and settings.gazetteer_file and not settings.gazetteer_file.exists():
        print(f"Gazetteer file not found: {settings.gazetteer_file}")


if __name__ == "__main__":
    main()
