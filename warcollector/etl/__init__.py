"""ETL module: provider client, record transformer and collection pipeline."""
