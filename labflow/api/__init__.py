# REST API and request/response schemas
