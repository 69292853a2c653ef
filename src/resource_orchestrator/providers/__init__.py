"""Provider adapters that perform the actual create/update/delete calls."""
