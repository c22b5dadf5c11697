"""AccessWatch analyzer — access decisions, sliding windows and alerting.

Modules
───────
  access_policy — whitelist/blacklist decision per event
  metrics       — per-reader sliding-window aggregates (aps, fr, uds, tv)
  detector      — rule predicates, cooldowns, combined alerts
  store         — bounded alert history + metric read side
  pipeline      — AccessEngine orchestration, event loaders, replay
  cli           — argparse entry-point
"""
