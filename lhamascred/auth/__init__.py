"""Authentication, accounts and provider credentials."""
