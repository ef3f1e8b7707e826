# app/api/cms/voucher.py
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.v1.schema.voucher import IssueVouchersSchema, VoucherDefinition
from app.api.v1.services.voucher import VoucherServices, get_services
from app.pedro.identity import admin_required
from app.pedro.response import ApiResponse

rp = APIRouter(prefix="/voucher", tags=["券管理"], dependencies=[Depends(admin_required)])


@rp.post("", name="创建券")
async def create_voucher(data: VoucherDefinition, services: VoucherServices = Depends(get_services)):
    voucher = await services.catalog.create(data)
    return ApiResponse.success(voucher, msg="Voucher created")


@rp.post("/issue", name="批量发放专属券")
async def issue_to_users(data: IssueVouchersSchema, services: VoucherServices = Depends(get_services)):
    vouchers = await services.catalog.issue_to_users(data.voucher, data.user_ids)
    return ApiResponse.success(vouchers, msg=f"Issued {len(vouchers)} vouchers")


@rp.get("", name="全部券（新→旧）")
async def list_vouchers(limit: Optional[int] = Query(default=None, ge=1),
                        services: VoucherServices = Depends(get_services)):
    return ApiResponse.success(await services.catalog.list_all(limit=limit))


@rp.get("/host/{host_id}", name="房东创建的券")
async def list_host_vouchers(host_id: str, services: VoucherServices = Depends(get_services)):
    return ApiResponse.success(await services.catalog.list_for_host(host_id))


@rp.post("/{voucher_id}/deactivate", name="停用")
async def deactivate(voucher_id: str, services: VoucherServices = Depends(get_services)):
    return ApiResponse.success(await services.catalog.deactivate(voucher_id))


@rp.post("/{voucher_id}/activate", name="启用")
async def activate(voucher_id: str, services: VoucherServices = Depends(get_services)):
    return ApiResponse.success(await services.catalog.activate(voucher_id))


@rp.post("/{voucher_id}/grant/{user_id}", name="定向发放")
async def grant(voucher_id: str, user_id: str, services: VoucherServices = Depends(get_services)):
    usage = await services.catalog.grant(voucher_id, user_id)
    return ApiResponse.success(usage, msg="Voucher granted")
