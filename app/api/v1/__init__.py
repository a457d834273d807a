"""FanVault Media API, version 1. Routes live in `app.api.v1.routers`."""
