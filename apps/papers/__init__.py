"""Paper storage: models and the deduplicating PaperStore."""
