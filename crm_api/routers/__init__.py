"""
HTTP роутеры API
"""
from crm_api.routers import (
    activity, auth, catalog, comments, counterparties, funnels, managers, projects,
    sales, settings, status_types, subprojects, tasks, upload
)

ALL_ROUTERS = [
    auth.router,
    managers.router,
    settings.router,
    counterparties.router,
    catalog.router,
    status_types.router,
    sales.router,
    projects.router,
    subprojects.router,
    funnels.funnels_router,
    funnels.subproject_funnels_router,
    tasks.router,
    comments.router,
    upload.router,
    activity.router,
]
