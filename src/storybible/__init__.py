"""storybible — local-first Story Bible store for writing assistants."""
