"""
recheck: Property-based testing that remembers its counterexamples.

Properties as pytest tests (the plugin registers itself)::

    from recheck.properties import forall

Failing inputs are stored in ``.recheck.ctex`` and replayed first on the
next run; ``recheck inspect`` lists them and ``recheck clean`` forgets them.

Yield-point instrumentation for concurrency bugs::

    from recheck.instrument import InstrumentationPolicy, instrument_module

Linked worker threads whose crashes fail the property::

    from recheck.supervision import LinkedWorkers

Running properties outside pytest::

    from recheck.context import open_run
"""

__version__ = "0.1.0"
