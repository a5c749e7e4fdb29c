"""schemacollab command line interface."""
