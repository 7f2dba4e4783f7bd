from pydantic import BaseModel


class GeoLocation(BaseModel):
    latitude: float
    longitude: float

    class Config:
        from_attributes = True
