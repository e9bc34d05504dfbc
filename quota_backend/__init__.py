"""License, organization-quota and access-control core for the AI alt-text backend."""
