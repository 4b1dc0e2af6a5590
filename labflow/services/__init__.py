# Record store, reporting, catalog and workflow orchestration
