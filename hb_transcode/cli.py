"""CLI entry points for hb-transcode package."""

import sys


def main_transcode():
    """Entry point for hb-transcode command."""
    from hb_transcode.core.main import main
    from hb_transcode.core.modules.system.system_utils import cleanup_temp_files

    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n[INTERRUPTED] Cleaning up...")
        cleanup_temp_files()
        sys.exit(1)


if __name__ == "__main__":
    main_transcode()
