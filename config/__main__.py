"""Command line interface for testing configuration loading"""
from . import settings_conf
from pathlib import Path

SECRET_KEYS = ('alchemy_api_key', 'zora_api_key')

def main():
    """Display loaded configuration"""
    print("\nSettings Configuration:")
    print("-" * 50)
    for key, value in settings_conf.items():
        if key in SECRET_KEYS and value:
            value = value[:4] + '...'
        print(f"{key}: {value}")
        
    example = Path("settings.conf.example")
    if not example.exists():
        with open(example, "w") as f:
            f.write("""[DEFAULT]
# Postgres connection URL
db_url = postgresql://postgres@localhost:5432/tokens
# Alchemy key for Base RPC and the log subscription
alchemy_api_key =
# Optional Zora API key
zora_api_key =
stats_batch_size = 50
backfill_interval = 300
scan_interval = 600
stats_interval = 120
""")
        print(f"\nWrote {example}")

if __name__ == "__main__":
    main()
