import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from clinic.core import config
from clinic.core.errors import ClinicError, clinic_error_handler
from clinic.database import Base, engine, ensure_appointment_schema
from clinic.models import appointment, availability, prescription, user  # noqa: F401
from clinic.routes import (
    appointment_routes,
    auth_routes,
    availability_routes,
    doctor_routes,
    patient_routes,
    prescription_routes,
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
)

app = FastAPI(title='Clinic API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)
app.add_exception_handler(ClinicError, clinic_error_handler)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
        ensure_appointment_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'Clinic API Running'}


app.include_router(auth_routes.router, prefix='/api/auth')
app.include_router(availability_routes.router, prefix='/api/availability')
app.include_router(doctor_routes.router, prefix='/api/doctors')
app.include_router(patient_routes.router, prefix='/api/patients')
app.include_router(appointment_routes.router, prefix='/api/appointments')
app.include_router(prescription_routes.router, prefix='/api/prescriptions')
