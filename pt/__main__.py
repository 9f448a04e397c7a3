import sys
from pt.common.logger import log

# Entry point for `python -m pt` and the `pilltracker` console script
def run() -> None:
    log.info("=== INITIALIZED NEW SESSION ===")
    try:
        from pt.ui.app import main
        main()
    except SystemExit:
        raise
    except Exception:
        # Full stack trace, always
        log.exception("Uncaught exception in entrypoint, exiting")
        sys.exit(1)

if __name__ == "__main__":
    run()
