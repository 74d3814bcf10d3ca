from flask import flash, redirect, render_template, url_for
from flask_login import current_user, login_required

from ..extensions import db
from ..projects.forms import ProjectForm
from ..services import story_store
from ..services.story_store import StoreError
from . import bp


@bp.route("/")
def index():
    if current_user.is_authenticated:
        return redirect(url_for("main.dashboard"))
    return render_template("main/landing.html")


@bp.route("/dashboard", methods=["GET", "POST"])
@login_required
def dashboard():
    form = ProjectForm()
    if form.validate_on_submit():
        try:
            project = story_store.create_project(
                current_user._get_current_object(),
                form.title.data,
                form.description.data,
            )
        except StoreError as exc:
            db.session.rollback()
            flash(str(exc), "danger")
        else:
            db.session.commit()
            flash("Project created.", "success")
            return redirect(url_for("projects.detail", project_id=project.id))

    projects = story_store.list_projects(current_user)
    return render_template("main/dashboard.html", projects=projects, form=form)
