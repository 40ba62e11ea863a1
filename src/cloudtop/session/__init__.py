"""Interactive dashboard session.

The session is split into a pure part and an effectful part:

* :mod:`~cloudtop.session.state`, :mod:`~cloudtop.session.messages` and
  :mod:`~cloudtop.session.commands` define the values exchanged;
* :func:`~cloudtop.session.reducer.reduce` is the transition function;
* :class:`~cloudtop.session.runtime.SessionRuntime` owns the event loop and
  executes commands, with :class:`~cloudtop.session.metrics_loop.MetricsRefreshLoop`
  for the periodic metrics refresh.
"""

from cloudtop.session.metrics_loop import MetricsRefreshLoop
from cloudtop.session.reducer import reduce
from cloudtop.session.runtime import SessionRuntime

__all__ = ["MetricsRefreshLoop", "SessionRuntime", "reduce"]
