"""SQLAlchemy models for users, push subscriptions and notifications."""
