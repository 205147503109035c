"""Schema package: table DDL, catalog reads and staging table detection."""
