"""Operations (scan, transfer, delete, project-side handlers)"""
from .scanner import walk_upper, list_files, update_files_list, read_files_list
from .transfer import (sync_writes_from_compute_to_project,
                       sync_writes_from_project_to_compute, classify_extract)
from .delete import (collect_whiteouts, sync_deletes_from_compute_to_project,
                     sync_deletes_from_project_to_compute)
from .project import files_to_delete, delete_whiteouts, handle_request

__all__ = [
    "walk_upper", "list_files", "update_files_list", "read_files_list",
    "sync_writes_from_compute_to_project", "sync_writes_from_project_to_compute",
    "classify_extract",
    "collect_whiteouts", "sync_deletes_from_compute_to_project",
    "sync_deletes_from_project_to_compute",
    "files_to_delete", "delete_whiteouts", "handle_request",
]
