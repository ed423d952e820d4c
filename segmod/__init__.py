"""Task-behavior and power modeling of networked devices using `SimPy`__.

__ https://simpy.readthedocs.io/en/latest/contents.html

The `segmod` package models small networked systems, such as battery-powered
sensor nodes, from three views:

 - the *functional* view: :class:`~segmod.task.Task` objects whose behavior
   is a :class:`~segmod.behavior.BehaviorChain` of segments;
 - the *physical* view: :class:`~segmod.node.Node` objects aggregating
   :mod:`devices <segmod.device>` with named power modes and a battery;
 - the *mapping* view: which task executes on which node and which task
   ports are bound to which communication devices.

Running the model yields throughput figures, such as messages delivered, and
energy figures, such as joules drawn per device and the charge left in each
battery.

Behavior
========

A task's behavior is a chain of atomic segments linked by named outcomes.
Segments read and write a per-task :class:`~segmod.context.TaskContext`; a
calculate segment converts the operation counts found in the context into
processor busy time. See :mod:`segmod.behavior`.

Power
=====

Every device is in exactly one mode at a time and draws that mode's power.
:class:`~segmod.loggers.NodePowerLogger` integrates power over time and
charges the energy to the node's battery.

Configuration
=============

A single configuration dictionary with dot-separated keys, e.g.
``'channel.bandwidth'``, is propagated to all components through the
:class:`~segmod.simulation.SimEnvironment`. Keys starting with ``'sim.'`` are
reserved for the simulation itself. :mod:`segmod.config` helps manage such
dictionaries.

Simulation
==========

:func:`~segmod.simulation.simulate()` takes a model through its phases:

 - *Initialization*: where the components' `__init__()` methods are called.
 - *Elaboration*: where connections are made, the mapping is checked and
   processes are started.
 - *Simulation*: where discrete event simulation occurs.
 - *Post-simulation*: where results are gathered.

:func:`~segmod.simulation.simulate_factors()` runs a model once per
combination of configuration factors, e.g. every compression algorithm at
several compression percentages.

"""

__all__ = ()
