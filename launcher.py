# launcher.py: entrypoint for packaged terminal builds, leaves a crash log behind on failure

import datetime
import os
import platform
import sys
import traceback
from pathlib import Path

_ENV_KEYS = ("PATH", "LOG_LEVEL", "PROGRAMDATA")


def _crash_dir() -> Path:
    root = os.environ.get("CHIYA_DATA_ROOT")
    target = Path(root).expanduser() / "logs" if root else Path.cwd()
    target.mkdir(parents=True, exist_ok=True)
    return target


def _write_crash(stage: str) -> Path | None:
    stamp = datetime.datetime.now().strftime("%Y%m%d-%H%M%S")
    try:
        path = _crash_dir() / f"ChiyaPOS-crash-{stage}-{stamp}.log"
        with path.open("w", encoding="utf-8") as fh:
            fh.write(f"[{stamp}] stage={stage} python={platform.python_version()} os={platform.platform()}\n")
            fh.write(f"argv: {sys.argv}\n")
            for key in sorted(os.environ):
                if key.startswith("CHIYA_") or key in _ENV_KEYS:
                    fh.write(f"{key}={os.environ[key]}\n")
            fh.write("\n--- TRACEBACK ---\n")
            traceback.print_exc(file=fh)
    except OSError:
        # nowhere to write; the original error is re-raised by the caller
        return None
    return path


try:
    from chiya_pos.app import main
except Exception:
    _write_crash("import")
    raise

if __name__ == "__main__":
    try:
        sys.exit(main())
    except Exception:
        crash = _write_crash("runtime")
        if crash is not None:
            print(f"Chiya POS stopped unexpectedly; details in {crash}", file=sys.stderr)
        raise
