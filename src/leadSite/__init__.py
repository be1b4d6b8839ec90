"""Flask website surface for lead capture, chat and CRM webhooks."""
