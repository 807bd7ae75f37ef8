"""Pure identity, semver, reference and version-chain helpers (no I/O)."""
