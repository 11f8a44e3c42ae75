"""PostgreSQL health report generator."""
