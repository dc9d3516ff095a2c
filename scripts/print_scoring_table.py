from __future__ import annotations

import argparse
import pprint

from mtf_signal_engine.config import ScoringConfig, load_config
from mtf_signal_engine.runner import scoring_signature


def main():
    p = argparse.ArgumentParser(description="Print the effective scoring table for a config")
    p.add_argument("--config", required=True, help="Path to YAML config")
    args = p.parse_args()

    cfg = load_config(args.config)
    table = cfg.scoring.signature()
    defaults = ScoringConfig().signature()

    print("SCORING TABLE:")
    pprint.pprint(table)
    print("\nSIGNATURE:", scoring_signature(cfg))

    changed = {k: (defaults[k], v) for k, v in table.items() if defaults.get(k) != v}
    print("\nDIFF FROM DEFAULTS (default, effective):")
    pprint.pprint(changed or "none")


if __name__ == "__main__":
    main()
