"""
Timecord - time-bounded community features for Discord

Timecord runs quarantines, polls and giveaways on a persistent expiration
engine, so deadlines survive restarts and fire exactly once.

Core Components:

- **Lifecycle Engine**: Per-kind timer registries, startup recovery, a sweep
  fallback and an idempotent expiration processor built on a conditional
  database update
- **Kind Services**: Quarantine (role snapshot and restore), polls (single and
  multiple choice voting) and giveaways (requirements, winner draw, reroll)
- **Presentation**: Embeds and persistent button rows kept in step with stored
  state
- **Interaction Routing**: Button presses mapped back onto the same service
  calls the slash commands use
"""
