"""GraphQL documents sent to the commerce platform Admin API."""

PRODUCT_VARIANTS_BY_SKU = """
query productVariantsBySku($query: String!, $first: Int!) {
  productVariants(first: $first, query: $query) {
    edges {
      node {
        id
        sku
        product {
          id
          title
        }
      }
    }
  }
}
"""

SHOP_LOCATIONS = """
query shopLocations {
  locations(first: 20) {
    edges {
      node {
        id
        name
        isActive
        fulfillsOnlineOrders
      }
    }
  }
}
"""

PRODUCTS_WITH_SKUS = """
query productsWithSkus($cursor: String) {
  products(first: 250, after: $cursor) {
    pageInfo {
      hasNextPage
      endCursor
    }
    edges {
      node {
        id
        title
        createdAt
        updatedAt
        variants(first: 250) {
          edges {
            node {
              id
              sku
            }
          }
        }
      }
    }
  }
}
"""

PRODUCT_SET = """
mutation productSet($input: ProductSetInput!, $synchronous: Boolean!) {
  productSet(input: $input, synchronous: $synchronous) {
    product {
      id
      variants(first: 10) {
        edges {
          node {
            id
            sku
          }
        }
      }
    }
    userErrors {
      field
      message
    }
  }
}
"""

# Per-line mutation executed by a bulk job against the staged JSONL payload
BULK_PRODUCT_SET = """
mutation call($input: ProductSetInput!) {
  productSet(input: $input) {
    product {
      id
      variants(first: 10) {
        edges {
          node {
            id
            sku
          }
        }
      }
    }
    userErrors {
      field
      message
    }
  }
}
"""

PRODUCT_DELETE = """
mutation productDelete($input: ProductDeleteInput!) {
  productDelete(input: $input) {
    deletedProductId
    userErrors {
      field
      message
    }
  }
}
"""

STAGED_UPLOADS_CREATE = """
mutation stagedUploadsCreate($input: [StagedUploadInput!]!) {
  stagedUploadsCreate(input: $input) {
    stagedTargets {
      url
      resourceUrl
      parameters {
        name
        value
      }
    }
    userErrors {
      field
      message
    }
  }
}
"""

BULK_OPERATION_RUN_MUTATION = """
mutation bulkOperationRunMutation($mutation: String!, $stagedUploadPath: String!) {
  bulkOperationRunMutation(mutation: $mutation, stagedUploadPath: $stagedUploadPath) {
    bulkOperation {
      id
      status
    }
    userErrors {
      field
      message
    }
  }
}
"""

BULK_OPERATION_STATUS = """
query bulkOperationStatus($id: ID!) {
  node(id: $id) {
    ... on BulkOperation {
      id
      status
      errorCode
      objectCount
      url
    }
  }
}
"""
