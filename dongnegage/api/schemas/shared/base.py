# dongnegage/api/schemas/shared/base.py

from pydantic import BaseModel, ConfigDict


class AppBaseModel(BaseModel):
    """
    Shared schema configuration

    from_attributes lets ORM rows be validated directly; extra='ignore'
    drops ORM attributes (and stray payload keys) no schema declares.
    """
    model_config = ConfigDict(
        from_attributes=True,
        extra='ignore'
    )
