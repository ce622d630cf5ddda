import threading


def start_daemon_timer(delay_seconds, target, args=(), kwargs=None):
    """Run `target` once after `delay_seconds` on a daemon timer. Returns the cancellable timer."""
    timer = threading.Timer(max(0.0, float(delay_seconds)), target, args=args, kwargs=kwargs or {})
    timer.daemon = True
    timer.start()
    return timer
