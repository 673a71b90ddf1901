#!/usr/bin/env python
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from config.config_loader import ConfigLoader, ConfigValidator
from utils.logger import setup_logger

logger = setup_logger(__name__)


def validate_configuration(config_path: Path = None) -> bool:
    print("\n" + "="*80)
    print(" Personalization Engine Configuration Validator")
    print("="*80 + "\n")

    try:
        loader = ConfigLoader(config_path=config_path)
        print(f"[INFO] Loading configuration from {loader.config_path}...")
        config = loader.load()

        print("[INFO] Configuration loaded successfully\n")

        print("[INFO] Running validation checks...")
        errors = ConfigValidator.validate(config)

        if errors:
            print(f"\n[ERROR] Configuration validation failed with {len(errors)} error(s):\n")
            for error in errors:
                print(f"  - {error}")
            print()
            return False

        print("[INFO] All validation checks passed\n")

        weights = config["scoring"]["weights"]
        drift = config["monitoring"]["drift"]
        print("Configuration Summary:")
        print("-" * 80)
        print(f"  Scoring Version:  {config['scoring'].get('version')}")
        print(f"  Scoring Weights:  {', '.join(f'{k}={v}' for k, v in weights.items())}")
        print(f"  Significance:     {config['experiments']['significance']}")
        print(f"  Thresholds:       {', '.join(config['monitoring']['thresholds'])}")
        print(f"  Drift Threshold:  {drift['threshold']} ({drift['bins']} bins)")
        print(f"  Drift Bands:      warning>{drift['bands']['warning']} critical>{drift['bands']['critical']}")
        print("-" * 80 + "\n")

        return True

    except Exception as e:
        print(f"\n[ERROR] Failed to validate configuration: {str(e)}\n")
        logger.error("Configuration validation failed", exc_info=True)
        return False


if __name__ == "__main__":
    path = Path(sys.argv[1]) if len(sys.argv) > 1 else None
    success = validate_configuration(path)
    sys.exit(0 if success else 1)
