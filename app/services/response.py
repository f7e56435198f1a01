class ListResponseMixin:
    @classmethod
    def list_response(cls, *args, **kwargs) -> dict:
        items = cls.find(*args, **kwargs)
        return {"items": items, "count": len(items)}
