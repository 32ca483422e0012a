"""deployforge monitor: read-only Rich views over plans, results and the journal.

Modules
-------
renderer
    ``DeploymentRenderer`` turns execution plans, ``SessionResult`` reports,
    failures and journal state into Rich renderables for terminal display.
"""
