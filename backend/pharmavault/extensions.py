# Overview: Flask extension instances for database, migrations and the connectivity gate.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .connectivity import ConnectivityGate

db = SQLAlchemy()
migrate = Migrate()
connectivity = ConnectivityGate()
