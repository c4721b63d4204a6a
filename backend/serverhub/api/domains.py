# serverhub/api/domains.py
from fastapi import APIRouter, Depends
from serverhub.auth import get_current_user
from serverhub.models import Domain
from serverhub.models.user import User
from serverhub.services import domains

router = APIRouter(prefix="/domains", tags=["domains"])


@router.get("/{domain}/servers")
async def list_domain_servers(domain: str, current_user: User = Depends(get_current_user)):
    """Servers linked to a domain"""
    return await domains.list_servers(domain)


@router.get("/{domain}", response_model=Domain)
async def get_domain(domain: str, current_user: User = Depends(get_current_user)):
    return await domains.get(domain)
