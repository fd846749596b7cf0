"""
Hazard Risk Engine - command line.

    python main.py 36.9741 -122.0308
    python main.py 36.9741 -122.0308 --hazard flood --debug
    python main.py 36.9741 -122.0308 --json
    python main.py 36.9741 -122.0308 --hazard wildfire --deep
"""

import json
import logging
import sys

from core.config import NRI_MODES, ConfigError, EngineConfig
from core.models import HazardKind, InvalidCoordinateError
from core.taxonomy import RiskLevel
from loaders.unified import UnifiedHazardFetcher

# Santa Cruz, CA
DEFAULT_LAT = 36.9741
DEFAULT_LON = -122.0308

LEVEL_GLYPHS = {
    RiskLevel.VERY_LOW: ".",
    RiskLevel.LOW: ":",
    RiskLevel.MODERATE: "%",
    RiskLevel.HIGH: "#",
    RiskLevel.VERY_HIGH: "@",
    RiskLevel.UNDETERMINED: "?",
    RiskLevel.NOT_APPLICABLE: "-",
}


def build_parser():
    import argparse

    parser = argparse.ArgumentParser(description="Natural hazard risk levels for a US location")
    parser.add_argument("lat", type=float, nargs="?", default=DEFAULT_LAT, help="Latitude (WGS84)")
    parser.add_argument("lon", type=float, nargs="?", default=DEFAULT_LON, help="Longitude (WGS84)")
    parser.add_argument("--hazard", action="append", choices=[k.value for k in HazardKind],
                        help="Hazard to check (repeatable, default: all)")
    parser.add_argument("--timeout", type=float, help="Overall deadline in seconds")
    parser.add_argument("--deep", action="store_true",
                        help="Wider, finer wildfire pixel search (30 m rings out to 300 m)")
    parser.add_argument("--nri-mode", choices=NRI_MODES,
                        help="NRI hazards: decide by rating label or by 0-100 score")
    parser.add_argument("--tract-only", action="store_true",
                        help="NRI hazards: do not fall back to county ratings")
    parser.add_argument("--debug", action="store_true", help="Show the attempt trace per hazard")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    return parser


def print_report(report, debug: bool = False):
    print(f"\n=== HAZARD RISK @ {report.latitude:.5f}, {report.longitude:.5f} ===\n")
    for kind, result in report.results.items():
        glyph = LEVEL_GLYPHS.get(result.level, "?")
        line = f" {glyph} {kind.value:<11} {result.level.value:<15}"
        if result.label:
            line += f" [{result.label}]"
        if result.score is not None:
            line += f" score={result.score}"
        print(line)
        print(f"     source: {result.provider or 'none'}")
        if result.note:
            print(f"     note:   {result.note}")
        if debug:
            for attempt in result.trace:
                print(f"       - {attempt.step:<32} {attempt.outcome.value}")

    print("\nLegend:")
    print(" @ : Very High   # : High   % : Moderate   : : Low   . : Very Low")
    print(" ? : Undetermined   - : Not Applicable")
    if not report.data_complete:
        print("\n[!] Some hazards could not be resolved:")
        for err in report.fetch_errors:
            print(f"    {err}")
        if report.cancelled:
            print("    deadline reached before every hazard finished")


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = EngineConfig.from_env(deep=args.deep or None)
        if args.nri_mode:
            config = config.with_overrides(nri_mode=args.nri_mode)
        if args.tract_only:
            config = config.with_overrides(nri_tract_only=True)
    except ConfigError as e:
        print(f"[Config] ERROR {e}")
        return 2

    debug = args.debug or config.debug
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    fetcher = UnifiedHazardFetcher(config)
    try:
        report = fetcher.fetch_all(args.lat, args.lon, hazards=args.hazard,
                                   debug=debug, timeout=args.timeout)
    except InvalidCoordinateError as e:
        print(f"[Input] ERROR {e}")
        return 2
    finally:
        fetcher.close()

    if args.json:
        print(json.dumps(report.to_dict(debug), indent=2))
    else:
        print_report(report, debug)
    return 0


if __name__ == "__main__":
    sys.exit(main())
