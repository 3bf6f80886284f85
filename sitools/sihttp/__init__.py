"""HTTP client with options and retries, client factories, errors and a WSGI server."""