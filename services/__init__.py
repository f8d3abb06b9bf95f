# Domain services used by the route blueprints.
# Modules are imported explicitly (e.g. `from services import meta_oauth`)
# so that importing one of them never pulls in the whole package.
