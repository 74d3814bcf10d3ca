from flask_wtf import FlaskForm
from wtforms import (
    HiddenField,
    IntegerField,
    SelectField,
    StringField,
    SubmitField,
    TextAreaField,
)
from wtforms.validators import InputRequired, Length, NumberRange, Optional

from ..models import CHARACTER_ROLES


class ProjectForm(FlaskForm):
    title = StringField("Project title", validators=[InputRequired(), Length(max=150)])
    description = TextAreaField("Short description", validators=[Length(max=2000)])
    submit = SubmitField("Create project")


class ProjectSettingsForm(FlaskForm):
    title = StringField("Project title", validators=[InputRequired(), Length(max=150)])
    description = TextAreaField("Synopsis", validators=[Optional(), Length(max=2000)])
    submit = SubmitField("Save settings")


class ChapterForm(FlaskForm):
    chapter_id = HiddenField(validators=[Optional()])
    title = StringField("Chapter title", validators=[InputRequired(), Length(max=200)])
    content = TextAreaField("Chapter text", validators=[Optional()])
    submit = SubmitField("Save chapter")


class CharacterForm(FlaskForm):
    character_id = HiddenField(validators=[Optional()])
    name = StringField("Name", validators=[Optional(), Length(max=120)])
    role = SelectField(
        "Story role",
        choices=[(role, role.title()) for role in CHARACTER_ROLES],
        default="supporting",
    )
    description = TextAreaField("Description", validators=[Optional()])
    submit = SubmitField("Save character")


class RelationshipForm(FlaskForm):
    character_a_id = SelectField("Character", choices=[], validators=[InputRequired()])
    character_b_id = SelectField("Related to", choices=[], validators=[InputRequired()])
    relationship_type = StringField("Relationship", validators=[InputRequired(), Length(max=120)])
    description = TextAreaField("Notes", validators=[Optional()])
    submit = SubmitField("Add relationship")


class LocationForm(FlaskForm):
    location_id = HiddenField(validators=[Optional()])
    name = StringField("Name", validators=[Optional(), Length(max=150)])
    description = TextAreaField("Description", validators=[Optional()])
    submit = SubmitField("Save location")


class TimelineEventForm(FlaskForm):
    event_id = HiddenField(validators=[Optional()])
    title = StringField("Event", validators=[Optional(), Length(max=200)])
    event_date = StringField("When", validators=[Optional(), Length(max=120)])
    order_index = IntegerField(
        "Position",
        validators=[Optional(), NumberRange(min=0)],
        description="Order of this event on the timeline",
    )
    description = TextAreaField("Description", validators=[Optional()])
    submit = SubmitField("Save event")

