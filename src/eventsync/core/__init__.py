"""Pure helpers and process-wide plumbing shared by the event engine."""
