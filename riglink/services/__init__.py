# Service layer for the rigctld link
# - supervisor:  start/stop/locate the rigctld child process
# - probes:      raw TCP port and connect probes
# - firewall:    Windows firewall probe and remediation (no-op elsewhere)
# - connection:  the single TCP connection and its status
# - dispatcher:  single-flight command lane and typed rig commands
# - diagnostics: read-only connectivity report with suggestions
# - poller:      main-state and S-meter polling timers
# - rig_models:  `rigctld -l` model catalogue
# - shell:       short-lived helper processes (PowerShell, rigctld -l)
