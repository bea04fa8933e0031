"""
ImgBed Backend — API Routes Package
=====================================

Route Inventory:
    - upload.py:  POST   /api/upload
    - images.py:  GET    /i/{filename}
                  GET    /api/images/preview/{path}
                  GET    /api/images/{image_id}
                  DELETE /api/images/{image_id}
    - health.py:  GET    /health

Handlers stay thin: extract request data, call a service, return the
response model. Errors propagate to the handlers registered in main.py.
"""
