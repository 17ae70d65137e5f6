from __future__ import annotations

import atexit
import faulthandler
import signal

from activity_backend import create_app
from activity_backend.services.flush_service import stop_activity_flush

app = create_app()

# Persist whatever is still dirty when the worker exits cleanly.
atexit.register(stop_activity_flush)

try:
    # Dump all thread stacks on demand: `kill -USR1 <worker_pid>`.
    faulthandler.register(signal.SIGUSR1, all_threads=True)
except (AttributeError, ValueError):
    pass


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=app.config.get("PORT", 3000), debug=app.config.get("DEBUG", False))
