"""
Комментарии к проектам и подпроектам (с одним вложением)
"""
from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from crm_api.access import Role, Scope, get_visible_or_404
from crm_api.auth import get_current_scope, get_current_user
from crm_api.database import Manager, Project, ProjectComment, SubProject, SubProjectComment, get_db
from crm_api.errors import ForbiddenError, NotFoundError, ValidationFailedError
from crm_api.responses import dump, dump_many, ok, record_activity
from crm_api.schemas import (
    CommentCreate, CommentUpdate, ProjectCommentResponse, SubProjectCommentResponse
)

router = APIRouter(prefix="/api/comments", tags=["comments"])


def has_body(content, file_url) -> bool:
    return bool((content or "").strip()) or bool(file_url)


def _comment_routes(path: str, parent_model, comment_model, parent_field: str,
                    response_schema, entity_type: str, parent_label: str):

    parent_column = getattr(comment_model, parent_field)

    def get_parent(db: Session, parent_id: int, scope: Scope):
        return get_visible_or_404(db, parent_model, parent_id, scope, f"{parent_label} not found")

    def get_comment(db: Session, parent_id: int, comment_id: int):
        comment = db.query(comment_model).filter(
            comment_model.id == comment_id,
            parent_column == parent_id,
            comment_model.is_deleted.is_(False),
        ).first()
        if comment is None:
            raise NotFoundError("Comment not found")
        return comment

    @router.get(f"/{path}/{{parent_id}}", name=f"list_{entity_type}s")
    async def list_comments(
        parent_id: int,
        scope: Scope = Depends(get_current_scope),
        db: Session = Depends(get_db)
    ):
        """Комментарии в порядке создания"""
        get_parent(db, parent_id, scope)
        comments = db.query(comment_model).filter(
            parent_column == parent_id,
            comment_model.is_deleted.is_(False),
        ).order_by(comment_model.created_at, comment_model.id).all()
        return ok(dump_many(response_schema, comments))

    @router.post(f"/{path}/{{parent_id}}", status_code=201, name=f"create_{entity_type}")
    async def create_comment(
        parent_id: int,
        payload: CommentCreate,
        current_user: Manager = Depends(get_current_user),
        scope: Scope = Depends(get_current_scope),
        db: Session = Depends(get_db)
    ):
        get_parent(db, parent_id, scope)
        if not has_body(payload.content, payload.file_url):
            raise ValidationFailedError("Comment content or file is required")

        comment = comment_model(
            manager_id=current_user.id,
            content=payload.content or "",
            file_name=payload.file_name,
            file_type=payload.file_type,
            file_url=payload.file_url,
        )
        setattr(comment, parent_field, parent_id)
        db.add(comment)
        db.flush()

        record_activity(db, current_user, "create", entity_type, comment.id)
        db.commit()
        db.refresh(comment)
        return ok(dump(response_schema, comment))

    @router.get(f"/{path}/{{parent_id}}/{{comment_id}}", name=f"get_{entity_type}")
    async def read_comment(
        parent_id: int,
        comment_id: int,
        scope: Scope = Depends(get_current_scope),
        db: Session = Depends(get_db)
    ):
        get_parent(db, parent_id, scope)
        return ok(dump(response_schema, get_comment(db, parent_id, comment_id)))

    @router.put(f"/{path}/{{parent_id}}/{{comment_id}}", name=f"update_{entity_type}")
    async def update_comment(
        parent_id: int,
        comment_id: int,
        payload: CommentUpdate,
        current_user: Manager = Depends(get_current_user),
        scope: Scope = Depends(get_current_scope),
        db: Session = Depends(get_db)
    ):
        """Изменить комментарий (только автор)"""
        get_parent(db, parent_id, scope)
        comment = get_comment(db, parent_id, comment_id)
        if comment.manager_id != current_user.id:
            raise ForbiddenError("Only the author can edit this comment")

        update_data = payload.model_dump(exclude_unset=True)
        content = update_data.get("content", comment.content)
        file_url = update_data.get("file_url", comment.file_url)
        if not has_body(content, file_url):
            raise ValidationFailedError("Comment content or file is required")

        if "content" in update_data:
            update_data["content"] = update_data["content"] or ""
        for field, value in update_data.items():
            setattr(comment, field, value)
        comment.updated_at = datetime.utcnow()

        record_activity(db, current_user, "update", entity_type, comment.id)
        db.commit()
        db.refresh(comment)
        return ok(dump(response_schema, comment))

    @router.delete(f"/{path}/{{parent_id}}/{{comment_id}}", name=f"delete_{entity_type}")
    async def delete_comment(
        parent_id: int,
        comment_id: int,
        current_user: Manager = Depends(get_current_user),
        scope: Scope = Depends(get_current_scope),
        db: Session = Depends(get_db)
    ):
        """Удалить комментарий (автор или admin); запись помечается удалённой"""
        get_parent(db, parent_id, scope)
        comment = get_comment(db, parent_id, comment_id)
        if comment.manager_id != current_user.id and current_user.role != Role.ADMIN.value:
            raise ForbiddenError("Only the author can delete this comment")

        comment.is_deleted = True
        comment.updated_at = datetime.utcnow()
        record_activity(db, current_user, "delete", entity_type, comment.id)
        db.commit()
        return ok(message="Comment deleted")


_comment_routes("projects", Project, ProjectComment, "project_id",
                ProjectCommentResponse, "project_comment", "Project")
_comment_routes("subprojects", SubProject, SubProjectComment, "subproject_id",
                SubProjectCommentResponse, "subproject_comment", "Sub-project")
