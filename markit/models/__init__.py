from markit.models.storeNode import StoreNode
