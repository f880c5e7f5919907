"""Journal definitions and default journal seeding."""
