import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response

from app.core.errors import ClusterNotFound, ConfigurationInvalid
from app.core.metrics import render_latest
from app.dto.sizing_request_dto import NodeCountObservation, ReconcileRequest
from app.service.sizing_service import ClusterSizingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/api')
metrics_router = APIRouter()
sizing_service = ClusterSizingService.from_settings()


def get_service() -> ClusterSizingService:
    return sizing_service


def _invalid(e: ConfigurationInvalid) -> HTTPException:
    return HTTPException(status_code=422, detail={'rule': e.rule, 'message': e.message})


@router.get('/status')
def status(service: ClusterSizingService = Depends(get_service)):
    return service.status()


@router.get('/clusters')
def clusters(service: ClusterSizingService = Depends(get_service)):
    return service.clusters()


@router.get('/clusters/{cluster_id:path}/status')
def cluster_status(cluster_id: str, service: ClusterSizingService = Depends(get_service)):
    try:
        return service.cluster_status(cluster_id)
    except ClusterNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.delete('/clusters/{cluster_id:path}/status')
async def forget_cluster(cluster_id: str, service: ClusterSizingService = Depends(get_service)):
    try:
        await service.forget_cluster(cluster_id)
    except ClusterNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {'forgotten': cluster_id}


@router.post('/clusters/{cluster_id:path}/node-count')
async def record_node_count(
    cluster_id: str, body: NodeCountObservation, service: ClusterSizingService = Depends(get_service),
):
    try:
        service.record_node_count(cluster_id, body.node_count)
    except TypeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    response = {'clusterID': cluster_id, 'nodeCount': body.node_count}
    if body.reconcile:
        result = await service.reconcile()
        response['cycle'] = result.model_dump(by_alias=True, mode='json')
    return response


@router.put('/configuration')
def put_configuration(body: dict, service: ClusterSizingService = Depends(get_service)):
    try:
        cfg = service.apply_configuration(body)
    except ConfigurationInvalid as e:
        raise _invalid(e)
    return {'generation': service.generation, 'configuration': cfg.model_dump(by_alias=True, mode='json')}


@router.post('/configuration/reload')
def reload_configuration(service: ClusterSizingService = Depends(get_service)):
    try:
        cfg = service.reload_configuration()
    except ConfigurationInvalid as e:
        raise _invalid(e)
    except Exception as e:
        raise HTTPException(status_code=502, detail=f"Configuration reload failed: {e}")
    return {'generation': service.generation, 'configuration': cfg.model_dump(by_alias=True, mode='json')}


@router.post('/reconcile')
async def reconcile(body: Optional[ReconcileRequest] = None, service: ClusterSizingService = Depends(get_service)):
    result = await service.reconcile(body.now if body else None)
    return result.model_dump(by_alias=True, mode='json')


@metrics_router.get('/metrics')
def metrics():
    payload, content_type = render_latest()
    return Response(content=payload, media_type=content_type)
