"""
PoapBot — Badge Entitlements for Discord Communities
======================================================
Links wallet addresses to Discord members, shows their proof-of-attendance
badge collections, distributes badges by hand or by rule, and gates roles
and channels behind badge ownership.

Package layout::

    poapbot/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Address patterns, colours, display helpers
    ├── exceptions.py      # Error taxonomy
    ├── bootstrap.py       # Wires store, clients, engines and gateway
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # Wallet links, distributions, rules, gates, cache
    ├── engine/
    │   ├── events.py      # Trigger events + typed event bus
    │   ├── rules.py       # Rule Engine (automation rules → issuance)
    │   └── gates.py       # Gate Reconciler (badges → role/channel grants)
    ├── services/
    │   ├── store.py       # Entitlement Store (sole owner of persisted state)
    │   ├── issuance.py    # Badge issuance API client + token cache
    │   ├── identity.py    # Address / name resolution
    │   ├── distribution.py # pending → claimed|failed issuance sequence
    │   ├── catalog.py     # Read-through event metadata cache
    │   └── embeds.py      # Rich display builders
    ├── gateway/
    │   ├── signature.py   # Ed25519 request verification
    │   ├── responses.py   # Reply model + ResponseSink bindings
    │   ├── registry.py    # Immutable command registry
    │   ├── commands.py    # Command handlers
    │   ├── interactions.py # Interaction Gateway
    │   └── rest.py        # Discord REST platform binding
    ├── api/
    │   ├── main.py        # FastAPI app (webhook endpoint)
    │   ├── deps.py        # Dependency providers
    │   └── register.py    # Slash-command registration CLI
    └── bot/
        ├── core.py        # Bot subclass, cog loader
        ├── platform.py    # discord.py platform binding + response sink
        └── cogs/
            ├── automation.py  # Gateway events → event bus
            └── commands.py    # Slash commands → command registry
"""

__version__ = "0.1.0"
