# Settings, database and exception hierarchy
